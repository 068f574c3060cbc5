import struct

from rarhash.lib.exceptions import (
    MalformedHeader,
    NoCandidateFound,
    TruncatedRead,
    UnsupportedFeature,
)
from rarhash.lib.id import identify_container
from rarhash.lib.rar5 import Rar5Archive, Rar5Block, pswcheck_checksum
from rarhash.lib.structures import StructReader, vint_encode

from .. import TestBase
from ..forge import (
    rar5_archive,
    rar5_block,
    rar5_crypt_field,
    rar5_crypt_header,
    rar5_end,
    rar5_extra_field,
    rar5_file,
    rar5_main,
)

SALT = bytes(range(0x10, 0x20))
IV = bytes(range(0x20, 0x30))
CHECK = bytes.fromhex('0102030405060708')


def _archive(data: bytes, path: str = 'archives/test.rar', strict: bool = False) -> Rar5Archive:
    reader = StructReader(data)
    identify_container(reader)
    return Rar5Archive(reader, path, strict=strict)


def _records(data: bytes, **kwargs):
    return list(_archive(data, **kwargs).records())


class TestBlockEnvelope(TestBase):

    def test_sizes(self):
        block = rar5_block(3, B'body', extra=B'extra', data=B'payload')
        header = Rar5Block.Parse(block)
        self.assertEqual(header.type, 3)
        self.assertEqual(header.extra_size, 5)
        self.assertEqual(header.data_size, 7)
        self.assertEqual(header.head_size, len(block) - 7)
        self.assertEqual(header.next_block, len(block))
        self.assertEqual(header.extra_offset, header.head_size - 5)
        self.assertTrue(header.flags.Extra)
        self.assertTrue(header.flags.Data)

    def test_oversized_header(self):
        block = struct.pack('<I', 0) + vint_encode(0x200001) + B'\x02\x00'
        self.assertRaises(MalformedHeader, Rar5Block.Parse, block)

    def test_checksum_covers_header_only(self):
        block = rar5_block(2, B'body', data=B'payload')
        header = Rar5Block.Parse(block)
        self.assertEqual(header.computed_crc(StructReader(block)), header.crc)


class TestFileEncryption(TestBase):

    def test_single_record(self):
        data = rar5_archive(
            rar5_main(),
            rar5_file(B'secret.txt', bytes(32), rar5_crypt_field(SALT, 15, IV, CHECK)),
            rar5_end(),
        )
        records = _records(data, path='x.rar')
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].format(), (
            'x.rar:$B5$*16*101112131415161718191a1b1c1d1e1f*15'
            '*202122232425262728292a2b2c2d2e2f*8*0102030405060708'))

    def test_one_record_per_encrypted_entry(self):
        data = rar5_archive(
            rar5_main(volume=3),
            rar5_file(B'one', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)),
            rar5_file(B'plain', B'not encrypted'),
            rar5_file(B'two', bytes(16), rar5_crypt_field(SALT[::-1], 16, IV[::-1], CHECK[::-1])),
            rar5_file(B'CMT', bytes(16), rar5_crypt_field(SALT, 17, IV, CHECK), htype=3),
            rar5_end(),
        )
        records = _records(data)
        self.assertEqual([r.lg2count for r in records], [15, 16, 17])
        self.assertEqual(records[1].salt, SALT[::-1])
        self.assertEqual(records[1].iv, IV[::-1])

    def test_other_extra_fields_are_skipped(self):
        extra = rar5_extra_field(3, vint_encode(0x02) + bytes(8)) + rar5_crypt_field(SALT, 15, IV, CHECK)
        data = rar5_archive(rar5_main(), rar5_file(B'a', bytes(16), extra), rar5_end())
        records = _records(data)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].pswcheck, CHECK)

    def test_entry_without_password_check(self):
        data = rar5_archive(
            rar5_main(),
            rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK, flags=0)),
            rar5_end(),
        )
        self.assertRaises(NoCandidateFound, _records, data)

    def test_iteration_count_too_large(self):
        data = rar5_archive(
            rar5_main(),
            rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 24, IV, CHECK)),
            rar5_file(B'b', bytes(16), rar5_crypt_field(SALT, 23, IV, CHECK)),
            rar5_end(),
        )
        self.assertEqual([r.lg2count for r in _records(data)], [23])

    def test_extra_field_exceeding_extra_area(self):
        broken = vint_encode(200) + vint_encode(1) + bytes(10)
        data = rar5_archive(
            rar5_main(),
            rar5_file(B'a', bytes(16), broken),
            rar5_file(B'b', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)),
            rar5_end(),
        )
        self.assertEqual(len(_records(data)), 1)

    def test_extra_field_size_too_long(self):
        broken = B'\x81\x80\x80\x00' + bytes(10)
        data = rar5_archive(
            rar5_main(),
            rar5_file(B'a', bytes(16), broken),
            rar5_end(),
        )
        self.assertRaises(NoCandidateFound, _records, data)

    def test_no_encryption(self):
        data = rar5_archive(rar5_main(), rar5_file(B'plain', B'text'), rar5_end())
        with self.assertRaises(NoCandidateFound) as context:
            _records(data)
        self.assertIn('archives/test.rar', str(context.exception))

    def test_missing_end_of_archive(self):
        data = rar5_archive(rar5_main(), rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)))
        self.assertEqual(len(_records(data)), 1)

    def test_truncated_header(self):
        data = rar5_archive(rar5_main(), rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)))
        self.assertRaises(TruncatedRead, _records, data[:30])

    def test_records_are_generated_before_errors(self):
        data = rar5_archive(
            rar5_main(),
            rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)),
            B'\x00\x00\x00',
        )
        records = _archive(data).records()
        self.assertEqual(next(records).lg2count, 15)
        self.assertRaises(TruncatedRead, next, records)


class TestHeaderChecksums(TestBase):

    def _corrupted(self):
        entry = bytearray(rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)))
        entry[0] ^= 0xFF
        return rar5_archive(rar5_main(), bytes(entry), rar5_end())

    def test_mismatch_is_tolerated(self):
        self.assertEqual(len(_records(self._corrupted())), 1)

    def test_mismatch_is_fatal_in_strict_mode(self):
        self.assertRaises(MalformedHeader, _records, self._corrupted(), strict=True)


class TestHeaderEncryption(TestBase):

    def test_encrypted_headers(self):
        data = rar5_archive(
            rar5_crypt_header(SALT, 15, CHECK),
            IV,
            self.generate_random_buffer(64),
        )
        archive = _archive(data, 'x.rar')
        records = list(archive.records())
        self.assertEqual(len(records), 1)
        self.assertTrue(archive.crypt.pswcheck_verified)
        self.assertEqual(records[0].format(), (
            'x.rar:$B5$*16*101112131415161718191a1b1c1d1e1f*15'
            '*202122232425262728292a2b2c2d2e2f*8*0102030405060708'))

    def test_damaged_password_check_is_still_emitted(self):
        data = rar5_archive(rar5_crypt_header(SALT, 15, CHECK, checksum=B'\0\0\0\0'), IV)
        archive = _archive(data)
        records = list(archive.records())
        self.assertEqual(records[0].pswcheck, CHECK)
        self.assertFalse(archive.crypt.pswcheck_verified)

    def test_password_check_checksum(self):
        self.assertEqual(len(pswcheck_checksum(CHECK)), 4)
        self.assertNotEqual(pswcheck_checksum(CHECK), pswcheck_checksum(CHECK[::-1]))

    def test_missing_password_check(self):
        data = rar5_archive(rar5_crypt_header(SALT, 15, None), IV)
        records = _records(data)
        self.assertEqual(records[0].pswcheck, bytes(8))
        self.assertEqual(records[0].salt, SALT)

    def test_maximum_iteration_count(self):
        data = rar5_archive(rar5_crypt_header(SALT, 24, CHECK), IV)
        self.assertEqual(_records(data)[0].lg2count, 24)

    def test_iteration_count_too_large(self):
        data = rar5_archive(rar5_crypt_header(SALT, 25, CHECK), IV)
        self.assertRaises(MalformedHeader, _records, data)

    def test_unknown_crypt_version(self):
        body = vint_encode(1) + vint_encode(1) + bytes((15,)) + SALT + CHECK + bytes(4)
        data = rar5_archive(rar5_block(4, body), IV)
        self.assertRaises(UnsupportedFeature, _records, data)

    def test_missing_initialization_vector(self):
        data = rar5_archive(rar5_crypt_header(SALT, 15, CHECK), IV[:5])
        self.assertRaises(TruncatedRead, _records, data)
