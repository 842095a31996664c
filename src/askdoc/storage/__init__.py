"""Document upload to the Microsoft Graph drive."""

from .upload import CONFLICT_BEHAVIOR_KEY, UploadConfig, UploadSessionClient, check_file_name, content_range

__all__ = ["CONFLICT_BEHAVIOR_KEY", "UploadConfig", "UploadSessionClient", "check_file_name", "content_range"]
