from .tabular import frame_report, quota_to_frame, rows_to_frame

__all__ = ["rows_to_frame", "quota_to_frame", "frame_report"]
