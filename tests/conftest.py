from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad
import pytest

# Predictable values, so that no test depends on randomness
KEY = bytes(16)
IV = bytes(16)


class AESOracle(object):
    '''
    AES-128-CBC padding oracle recording every query and its answer.
    '''

    def __init__(self, key=KEY, iv=IV):
        self.key = key
        self.iv = iv
        self.calls = []

    def __call__(self, data):
        ptext = AES.new(self.key, AES.MODE_CBC, self.iv).decrypt(bytes(data))

        try:
            unpad(ptext, AES.block_size)
            valid = True
        except ValueError:
            valid = False

        self.calls.append((bytes(data), valid))
        return valid


def aes_encrypt(plaintext, key=KEY, iv=IV):
    '''
    Returns the IV followed by the AES-128-CBC encryption of *plaintext*.
    '''
    return iv + AES.new(key, AES.MODE_CBC, iv).encrypt(pad(plaintext, AES.block_size))


@pytest.fixture
def oracle():
    return AESOracle()


@pytest.fixture
def encrypt():
    return aes_encrypt
