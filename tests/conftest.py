import pytest
import requests

from blobkey.test_server import TestServer

DIGEST = "b58899f069c47216f6002a6850143dc6fae0d35eb8b0df9300bbe6327b9c2171"
QUAY_DIGEST = "abcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890"

QUAY_CDN_URL = f"https://cdn01.quay.io/repository/sha256/ab/{QUAY_DIGEST}"
QUAY_S3_PATH_URL = f"https://s3.us-east-1.amazonaws.com/quayio-production-s3/sha256/ab/{QUAY_DIGEST}"
QUAY_S3_VHOST_URL = f"https://quayio-production-s3.s3.us-east-1.amazonaws.com/sha256/ab/{QUAY_DIGEST}"
DOCKER_R2_URL = (
    "https://docker-images-prod.6aa30f8b08e16409b46e0173d6de2f56.r2.cloudflarestorage.com"
    f"/registry-v2/docker/registry/v2/blobs/sha256/b5/{DIGEST}/data"
)
DOCKER_CDN_URL = (
    "https://production.cloudflare.docker.com"
    f"/registry-v2/docker/registry/v2/blobs/sha256/b5/{DIGEST}/data"
)
DOCKER_S3_URL = (
    "https://docker-images-prod.s3.dualstack.us-east-1.amazonaws.com"
    f"/registry-v2/docker/registry/v2/blobs/sha256/b5/{DIGEST}/data"
)
NON_MATCHING_URL = "https://example.com/some/path?token=abc"

ELIGIBLE_URLS = [
    QUAY_CDN_URL,
    QUAY_S3_PATH_URL,
    QUAY_S3_VHOST_URL,
    DOCKER_R2_URL,
    DOCKER_CDN_URL,
    DOCKER_S3_URL,
]


@pytest.fixture(scope="module")
def origin():
    server = TestServer()
    server.start(host="127.0.0.1", port=0)
    yield server
    server.stop()


@pytest.fixture
def direct_session():
    # never route test traffic through a proxy from the environment
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()
