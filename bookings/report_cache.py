from django.core.cache import cache

REPORT_CACHE_VERSION_KEY = "reports:version"


def report_cache_version():
    return cache.get(REPORT_CACHE_VERSION_KEY, 0)


def invalidate_report_cache():
    """Move cached report payloads to a fresh key space."""
    try:
        cache.incr(REPORT_CACHE_VERSION_KEY)
    except ValueError:
        cache.set(REPORT_CACHE_VERSION_KEY, 1, None)
