# This file is part of ec2net. See LICENSE file for license information.
"""Atomic file publication.

Every generated config artifact goes through install_if_changed() so that
networkd is only reloaded when some file really changed.
"""
import hashlib
import logging
import os
import tempfile

LOG = logging.getLogger(__name__)


def _md5sum(path: str) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as stream:
        for chunk in iter(lambda: stream.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_candidate(target: str, content: str, mode: int = 0o644) -> str:
    """Write content to a temporary file beside target and return its path.

    The temporary file lives in the target's directory so that a later
    rename over target is atomic.
    """
    dirname = os.path.dirname(target) or "."
    os.makedirs(dirname, exist_ok=True)
    tf = tempfile.NamedTemporaryFile(
        dir=dirname,
        prefix=".{0}.".format(os.path.basename(target)),
        suffix=".new",
        delete=False,
        mode="w",
        encoding="utf-8",
    )
    try:
        with tf:
            tf.write(content)
        os.chmod(tf.name, mode)
    except Exception:
        os.unlink(tf.name)
        raise
    return tf.name


def write_file(path: str, content: str, mode: int = 0o644):
    """Atomically replace path with content."""
    candidate = write_candidate(path, content, mode)
    os.replace(candidate, path)


def install_if_changed(candidate: str, target: str) -> bool:
    """Move candidate over target unless doing so changes nothing.

    @return: True when target was created or its content changed. The
        candidate file is consumed in every case.
    """
    if os.path.exists(target):
        if _md5sum(target) == _md5sum(candidate):
            LOG.debug("%s is unchanged", target)
            os.unlink(candidate)
            return False
        LOG.debug("Replacing %s", target)
        os.replace(candidate, target)
        return True

    if os.path.getsize(candidate) > 0:
        LOG.debug("Installing new %s", target)
        os.replace(candidate, target)
        return True
    os.unlink(candidate)
    return False


def install_content(target: str, content: str) -> bool:
    """Generate-compare-install content at target."""
    return install_if_changed(write_candidate(target, content), target)
