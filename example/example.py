#!/usr/bin/env python3
import logging
import os

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad

from padding_oracle import BadPaddingException, PaddingOracle, decrypt


class PadBuster(PaddingOracle):
    def __init__(self, key, iv, **kwargs):
        super(PadBuster, self).__init__(**kwargs)
        self.key = key
        self.iv = iv

    def oracle(self, data, **kwargs):
        _cipher = AES.new(self.key, AES.MODE_CBC, self.iv)
        ptext = _cipher.decrypt(bytes(data))

        try:
            unpad(ptext, AES.block_size)
        except ValueError:
            raise BadPaddingException

        logging.debug(f'No padding exception raised on {data.hex()}')


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)

    key = os.urandom(AES.block_size)
    iv = os.urandom(AES.block_size)

    teststring = b'The quick brown fox jumped over the lazy dog'

    cipher = AES.new(key, AES.MODE_CBC, iv)
    ctext = iv + cipher.encrypt(pad(teststring, AES.block_size))

    print(f'Key:        {key.hex()}')
    print(f'Ciphertext: {ctext.hex()}')

    padbuster = PadBuster(key, iv, max_workers=8)

    decrypted = padbuster.decrypt(ctext, block_size=AES.block_size)

    print(f'Decrypted:  {bytes(decrypted)}')
    print(f'\nRecovered in {padbuster.attempts} attempts\n')

    assert unpad(bytes(decrypted), AES.block_size) == teststring

    # The same attack with a plain function as the oracle

    def is_padding_valid(data):
        try:
            unpad(AES.new(key, AES.MODE_CBC, iv).decrypt(data), AES.block_size)
        except ValueError:
            return False
        return True

    decrypted = decrypt(ctext, AES.block_size, is_padding_valid)

    print(f'Decrypted:  {unpad(bytes(decrypted), AES.block_size)}')
