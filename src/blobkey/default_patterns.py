"""Default content-addressable URL patterns.

Container registries answer blob requests with a redirect to a CDN or object
storage URL carrying short-lived signed query parameters. The path of these
URLs embeds the blob's SHA-256 digest, so the bytes behind a URL never change
even though the query string does on every pull.

How it works
------------
- Each pattern describes one redirect shape (edge host, path-style or
  virtual-hosted-style bucket addressing).
- A URL matching any pattern is eligible for a shared cache key: the store-id
  helper probes the signed URL and, on success, keys the object by the URL
  without its query string.
- The ICAP service uses the same patterns to hide ``Authorization`` from the
  cache-admission decision for these URLs only.

Example
-------
Original request URL:
    https://production.cloudflare.docker.com/registry-v2/docker/registry/v2
    /blobs/sha256/24/24c63b8d...a74d0/data?verify=1717211225-SoFsY9MpCnMY8x

Store-id:
    https://production.cloudflare.docker.com/registry-v2/docker/registry/v2
    /blobs/sha256/24/24c63b8d...a74d0/data

Overriding
----------
Pass ``--patterns-file`` or set ``BLOBKEY_PATTERNS`` (one regex per line).
Both helpers must be started with the same list.
"""

_DIGEST = r"[a-f0-9]{64}"
_DOCKER_BLOB_PATH = rf"/registry-v2/docker/registry/v2/blobs/sha256/[a-f0-9]{{2}}/{_DIGEST}/data"

QUAY_PATTERNS = (
    # Quay CDN edge nodes (cdn.quay.io, cdn01.quay.io, ...)
    rf"^https://cdn(\d{{2}})?\.quay\.io/.+/sha256/.+/{_DIGEST}",
    # Quay S3, path-style
    rf"^https://s3\.[a-z0-9-]+\.amazonaws\.com/quayio-production-s3/sha256/.+/{_DIGEST}",
    # Quay S3, virtual-hosted-style
    rf"^https://quayio-production-s3\.s3[a-z0-9.-]*\.amazonaws\.com/sha256/.+/{_DIGEST}",
)

DOCKER_HUB_PATTERNS = (
    # Cloudflare R2
    rf"^https://docker-images-prod\.[a-f0-9]{{32}}\.r2\.cloudflarestorage\.com{_DOCKER_BLOB_PATH}",
    # Cloudflare CDN
    rf"^https://production\.cloudflare\.docker\.com{_DOCKER_BLOB_PATH}",
    # S3, virtual-hosted-style
    rf"^https://docker-images-prod\.s3[a-z0-9.-]*\.amazonaws\.com{_DOCKER_BLOB_PATH}",
)


def default_pattern_sources() -> list[str]:
    """Return the built-in pattern strings, in evaluation order."""
    return [*QUAY_PATTERNS, *DOCKER_HUB_PATTERNS]
