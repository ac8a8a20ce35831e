"""Shared fixtures."""
import os

import pytest
from cryptography.fernet import Fernet

from eve_inventory.auth.credential_store import LocalDirectoryCredentialStore
from eve_inventory.auth.crypto import TokenCipher


@pytest.fixture
def cipher():
    return TokenCipher(Fernet.generate_key())


@pytest.fixture
def credential_store(tmp_path, cipher):
    return LocalDirectoryCredentialStore(os.path.join(str(tmp_path), "credentials"), cipher)
