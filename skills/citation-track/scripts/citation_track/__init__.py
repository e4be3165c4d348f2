"""
Citation track changes for WordprocessingML documents.

Renumbers in-text citation markers, marks orphaned markers deleted and
reorders the reference list, all as Word revisions.
"""

from .assembler import DocumentAssembler, enable_track_revisions, split_regions
from .body_patcher import BodyPatcher, patch_body
from .common import (
    AssemblyResult,
    BodyPatchResult,
    ChangeSet,
    CitationOccurrence,
    EditMatch,
    InvalidDocxError,
    PatchSummary,
    ReferenceEntry,
    ReferencePatchResult,
    XmlBalanceError,
)
from .reference_patcher import (
    FamilyNameMatcher,
    LeadingFamilyNameMatcher,
    ReferenceListPatcher,
    patch_references,
)
from .resolver import resolve_change_set
from .revisions import RevisionCounter

__all__ = [
    'AssemblyResult',
    'BodyPatchResult',
    'BodyPatcher',
    'ChangeSet',
    'CitationOccurrence',
    'DocumentAssembler',
    'EditMatch',
    'FamilyNameMatcher',
    'InvalidDocxError',
    'LeadingFamilyNameMatcher',
    'PatchSummary',
    'ReferenceEntry',
    'ReferenceListPatcher',
    'ReferencePatchResult',
    'RevisionCounter',
    'XmlBalanceError',
    'enable_track_revisions',
    'patch_body',
    'patch_references',
    'resolve_change_set',
    'split_regions',
]
