SEGMENT_DURATION_SECONDS = 180
MIN_DURATION_FOR_SEGMENTATION = 420  # 7 minutes
MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024
DEFAULT_MONTHLY_LIMIT = 10
MAX_ERROR_CHARS = 1200
PIPELINES = ("full_cycle", "sdr")
