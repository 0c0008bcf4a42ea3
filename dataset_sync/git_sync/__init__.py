"""Git synchronization for dataset-sync."""

from .credentials import Credential, CredentialsState, CredentialType, Strategy, negotiate
from .merge_analysis import MergeAnalysis
from .origin import Origin
from .pull import PullOutcome, PullState
from .repository import Repository
from .resolve import ResolveResult
from .settings import PrunePolicy, Settings
from .status import (
    BranchHead, DetachedHead, FileFlag, RepositoryStatus, Tracking, UnbornHead, WorkingTreeStatus
)
from .transport import TransferProgress

__all__ = [
    'Credential',
    'CredentialsState',
    'CredentialType',
    'Strategy',
    'negotiate',
    'MergeAnalysis',
    'Origin',
    'PullOutcome',
    'PullState',
    'Repository',
    'ResolveResult',
    'PrunePolicy',
    'Settings',
    'BranchHead',
    'DetachedHead',
    'FileFlag',
    'RepositoryStatus',
    'Tracking',
    'UnbornHead',
    'WorkingTreeStatus',
    'TransferProgress'
]
