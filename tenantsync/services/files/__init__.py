from tenantsync.services.files.sync import (
    FileMetadata,
    FileSaveRequest,
    FileSyncEngine,
    LoadedFile,
    build_storage_path,
)

__all__ = ["FileMetadata", "FileSaveRequest", "FileSyncEngine", "LoadedFile", "build_storage_path"]
