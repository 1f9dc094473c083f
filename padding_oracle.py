# -*- coding: utf-8 -*-
'''
CBC Padding Oracle Decryption API
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Recovers the plaintext of a CBC-mode, PKCS#7-padded ciphertext given
nothing but an oracle telling whether a ciphertext decrypts to valid
padding. The IV is expected to be prepended to the ciphertext; if it
is not, the first block is left undecrypted.
'''
from concurrent.futures import ThreadPoolExecutor
import logging
import threading

__all__ = [
    'BadPaddingException',
    'CallbackOracle',
    'DecryptionError',
    'InvalidPaddingError',
    'PaddingOracle',
    'WrongSizeError',
    'decrypt',
    ]


class BadPaddingException(Exception):
    '''
    Raised when a blackbox decryptor reveals a padding oracle.

    This Exception type should be raised in :meth:`.PaddingOracle.oracle`.
    '''


class DecryptionError(Exception):
    '''
    Base class of the errors raised while decrypting.
    '''


class WrongSizeError(DecryptionError, ValueError):
    '''
    The ciphertext length is not a multiple of the block size.

    :ivar int block_size: The expected block size.
    :ivar int found: The actual ciphertext length.
    '''

    def __init__(self, block_size, found):
        super(WrongSizeError, self).__init__(block_size, found)
        self.block_size = block_size
        self.found = found

    def __str__(self):
        return (f'invalid ciphertext size. The length should be a multiple '
                f'of {self.block_size}, but the length is {self.found}')


class InvalidPaddingError(DecryptionError):
    '''
    No candidate byte was confirmed by the oracle. The oracle is broken,
    not deterministic, or the padding is not PKCS#7.

    :ivar block: Index of the ciphertext block being decrypted (the IV
        is block 0), or None.
    :ivar position: Byte position within that block, counted from its
        end starting at 1, or None.
    '''

    def __init__(self, block=None, position=None):
        super(InvalidPaddingError, self).__init__(block, position)
        self.block = block
        self.position = position

    def __str__(self):
        msg = ("couldn't decrypt the data. Make sure your oracle is valid "
               "and that PKCS7 padding is used")
        if self.block is not None:
            msg += f' (block {self.block}, byte {self.position} from the end)'
        return msg


class PaddingOracle(object):
    '''
    Implementations should subclass this object and implement
    the :meth:`oracle` method.

    :param int max_workers: Number of threads used to try the 256
        candidate values of a byte, default is 1 (sequential). The
        result does not depend on this value.
    '''

    def __init__(self, **kwargs):
        self.log = logging.getLogger(self.__class__.__name__)
        self.max_workers = int(kwargs.get('max_workers', 1))
        self.attempts = 0
        self._lock = threading.Lock()

    def oracle(self, data, **kwargs):
        '''
        Feeds *data* to a decryption function that reveals a Padding
        Oracle. If a Padding Oracle was revealed, this method
        should raise a :exc:`.BadPaddingException`, otherwise this
        method should just return.

        :param bytearray data: A bytearray of (fuzzed) encrypted bytes,
            two blocks long. The first block plays the part of the IV.
        :raises: :class:`BadPaddingException` if decryption reveals an
            oracle.
        '''
        raise NotImplementedError

    def decrypt(self, ciphertext, block_size=16, **kwargs):
        '''
        Decrypts *ciphertext* by exploiting a Padding Oracle.

        :param ciphertext: Encrypted data, the IV being its first block.
        :param int block_size: Cipher block size (in bytes).
        :returns: Decrypted data of every block but the IV, padding
            included.
        :raises: :class:`WrongSizeError` if *ciphertext* is not block
            aligned, :class:`InvalidPaddingError` if a byte cannot be
            recovered.
        '''
        check_block_size(block_size)

        ciphertext = bytearray(ciphertext)

        if len(ciphertext) % block_size != 0:
            raise WrongSizeError(block_size, len(ciphertext))

        self.log.debug(f'Attempting to decrypt {ciphertext.hex()} bytes')

        blocks = []

        # Solve the last block pair, then cut the last block

        while len(ciphertext) > block_size:
            n = len(ciphertext) // block_size - 1

            block = self.bust(ciphertext, block_size=block_size, **kwargs)

            self.log.info(f'Decrypted block {n}: {bytes(block)}')

            blocks.insert(0, block)
            del ciphertext[-block_size:]

        return bytearray(b''.join(blocks))

    def bust(self, ciphertext, block_size=16, **kwargs):
        '''
        A block buster. Recovers the plaintext of the last block of
        *ciphertext* by forging the block before it. This method should
        not be called directly, instead use :meth:`decrypt`.

        :param ciphertext: At least two blocks of encrypted data.
        :param int block_size: Cipher block size (in bytes).
        :returns: A bytearray containing the decrypted bytes
        '''
        n = len(ciphertext) // block_size - 1
        block_pair = bytearray(ciphertext[-2 * block_size:])
        plaintext = bytearray()

        self.log.debug(f'Processing block {n}: {block_pair[block_size:].hex()}')

        for i in range(1, block_size + 1):
            offset = block_size - i
            initial_byte = block_pair[offset]

            test_bytes = bytearray(block_pair)

            # Force the bytes already solved to decrypt to the padding i

            for j in range(1, i):
                test_bytes[offset + j] = i ^ plaintext[j - 1] ^ block_pair[offset + j]

            k = self.scan(test_bytes, offset, block_size, **kwargs)

            if k is None:
                raise InvalidPaddingError(block=n, position=i)

            plaintext.insert(0, initial_byte ^ k ^ i)

            self.log.debug(f'byte {offset} of block {n} is {plaintext[0]:#04x}')

        return plaintext

    def scan(self, test_bytes, offset, block_size, **kwargs):
        '''
        Tries every value of the byte at *offset* in *test_bytes* and
        returns the smallest one the oracle confirms, or None.
        '''
        if self.max_workers <= 1:
            for k in range(256):
                test_bytes[offset] = k
                if self.confirm(test_bytes, offset, block_size, **kwargs):
                    return k
            return None

        def candidate(k):
            probe = bytearray(test_bytes)
            probe[offset] = k
            return self.confirm(probe, offset, block_size, **kwargs)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = executor.map(candidate, range(256))
            confirmed = [k for k, ok in enumerate(results) if ok]

        return min(confirmed, default=None)

    def confirm(self, test_bytes, offset, block_size, **kwargs):
        '''
        Returns True if *test_bytes* has a valid padding that survives
        complementing the byte just before *offset*. A valid padding
        ending on a longer run of plaintext bytes (e.g. ``\\x02\\x02``
        while looking for ``\\x01``) does not survive it.
        '''
        if not self.probe(test_bytes, **kwargs):
            return False

        # See https://crypto.stackexchange.com/questions/40800/is-the-padding-oracle-attack-deterministic

        if offset % block_size == 0:
            return True

        flipped = bytearray(test_bytes)
        flipped[offset - 1] ^= 0xff

        if self.probe(flipped, **kwargs):
            return True

        self.log.debug(f'Rejected false positive {test_bytes[offset]:#04x} at byte {offset}')
        return False

    def probe(self, data, **kwargs):
        '''
        Calls :meth:`oracle` on a copy of *data* and returns whether
        the padding was valid.
        '''
        with self._lock:
            self.attempts += 1

        try:
            self.oracle(data[:], **kwargs)
        except BadPaddingException:
            return False
        except Exception:
            self.log.exception(f'Caught unhandled exception!\n'
                               f'Probed bytes: {data.hex()}\n'
                               f'Attempts so far: {self.attempts}\n')
            raise

        return True


class CallbackOracle(PaddingOracle):
    '''
    A :class:`PaddingOracle` asking a callable. *callback* takes the
    probed bytes and returns True when their padding is valid.
    '''

    def __init__(self, callback, **kwargs):
        super(CallbackOracle, self).__init__(**kwargs)
        self.callback = callback

    def oracle(self, data, **kwargs):
        if not self.callback(bytes(data)):
            raise BadPaddingException


def check_block_size(block_size):
    '''
    PKCS#7 pads with the padding length itself, so a block holds at
    most 255 bytes.
    '''
    if not isinstance(block_size, int) or isinstance(block_size, bool):
        raise TypeError(f'Block size must be an int, not {type(block_size).__name__}')

    if not 0 < block_size < 256:
        raise ValueError(f'Illegal block size {block_size}')


def decrypt(ciphertext, block_size, oracle, **kwargs):
    '''
    Decrypts *ciphertext* using *oracle*. The IV is assumed to be
    prepended to the ciphertext, otherwise the first block is not
    decrypted.

    :param ciphertext: Encrypted data.
    :param int block_size: Cipher block size (in bytes).
    :param oracle: Either a callable taking bytes and returning whether
        they decrypt to a valid padding, or a :class:`PaddingOracle`.
    :param kwargs: Options of :class:`PaddingOracle` when *oracle* is a
        callable, keyword arguments of :meth:`PaddingOracle.oracle`
        otherwise. Options such as *max_workers* must then be given
        to the :class:`PaddingOracle` constructor.
    :returns: Decrypted data, padding included.
    '''
    if isinstance(oracle, PaddingOracle):
        if 'max_workers' in kwargs:
            raise TypeError('max_workers must be passed to the PaddingOracle constructor')

        return oracle.decrypt(ciphertext, block_size=block_size, **kwargs)

    return CallbackOracle(oracle, **kwargs).decrypt(ciphertext, block_size=block_size)
