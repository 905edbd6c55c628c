"""
FileForce Store - content-addressed storage and redundant retrieval.
"""

from fileforce.store.base import ContentStore, PeerRef, ProviderNetwork
from fileforce.store.filestore import FileStore
from fileforce.store.peers import MirrorNetwork
from fileforce.store.redundant import PullState, PullStatus, RedundantRetrieval

__all__ = [
    "ContentStore",
    "PeerRef",
    "ProviderNetwork",
    "FileStore",
    "MirrorNetwork",
    "PullState",
    "PullStatus",
    "RedundantRetrieval",
]
