# =============================================================================
# lib/ - Standalone Utility Modules
# =============================================================================
# This package contains reusable utilities:
# - database.py: SQLAlchemy engine, sessions and table creation
# - orm.py: Table definitions
# - supabase_client.py: Supabase Storage wrapper (image + export files)
# - analysis_client.py: HTTP client for the detection / PMI service
# - mailer.py: Transactional email (verification, resets, goodbye)
# - rate_limiter.py: Redis-backed fixed-window limits
# - session_info.py: Browser, OS, device and location of a sign-in
# - utils.py: Shared utilities (file names, units)
#
# These modules are self-contained and can be tested in isolation.
# =============================================================================

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import sanitize_filename, split_extension

__all__ = [
    # Supabase
    "SupabaseClient",
    "SupabaseClientError",
    # Utils
    "sanitize_filename",
    "split_extension",
]
