"""Provider implementations."""

from unistore.backends._ftp import FTPProvider
from unistore.backends._local import LocalProvider
from unistore.backends._memory import MockProvider

__all__ = ["FTPProvider", "LocalProvider", "MockProvider"]

try:
    from unistore.backends._s3 import S3Provider

    __all__ = [*__all__, "S3Provider"]
except ImportError:  # pragma: no cover
    pass

try:
    from unistore.backends._gcs import GCSProvider

    __all__ = [*__all__, "GCSProvider"]
except ImportError:  # pragma: no cover
    pass

try:
    from unistore.backends._sftp import SFTPProvider

    __all__ = [*__all__, "SFTPProvider"]
except ImportError:  # pragma: no cover
    pass
