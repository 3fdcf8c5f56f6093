"""
Detached signature verification via gpg.

The install path only needs a yes/no answer; what counts as a trusted
key is gpg's business (the default keyring, or an explicit one).
"""

import logging
import os
import subprocess
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)


class GpgVerifier:
    """Verify detached signatures with ``gpg --verify``."""

    def __init__(self, gpg: str = 'gpg', timeout: int = 30):
        self.gpg = gpg
        self.timeout = timeout

    def verify(self, payload: bytes, signature: bytes, keyring: Optional[str] = None) -> bool:
        """
        Check ``signature`` over ``payload``.

        Returns:
            True only if gpg reports a good signature
        """
        with tempfile.TemporaryDirectory(prefix='ghrelease-sig-') as tmp:
            data_path = os.path.join(tmp, 'payload')
            sig_path = os.path.join(tmp, 'payload.sig')
            with open(data_path, 'wb') as f:
                f.write(payload)
            with open(sig_path, 'wb') as f:
                f.write(signature)

            cmd = [self.gpg, '--batch', '--status-fd', '1']
            if keyring:
                cmd.extend(['--no-default-keyring', '--keyring', keyring])
            cmd.extend(['--verify', sig_path, data_path])

            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.error(f"gpg could not be run: {e}")
                return False

        good = result.returncode == 0 and '[GNUPG:] GOODSIG' in (result.stdout or '')
        if not good:
            logger.debug(f"gpg rejected signature: {(result.stderr or '').strip()}")
        return good
