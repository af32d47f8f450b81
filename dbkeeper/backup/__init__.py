"""
Backup module for dbkeeper.

This module handles the core backup functionality including:
- Compression of tracked files
- Storage (rclone remotes and S3)
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor, BackupOrchestrator
from .compression import create_archive, cleanup_scratch
from .storage import RcloneStorage, S3Storage, create_storage
from .retention import RetentionManager, select_for_deletion

__all__ = [
    'BackupExecutor',
    'BackupOrchestrator',
    'create_archive',
    'cleanup_scratch',
    'RcloneStorage',
    'S3Storage',
    'create_storage',
    'RetentionManager',
    'select_for_deletion'
]
