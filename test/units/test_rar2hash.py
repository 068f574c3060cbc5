import io

from rarhash.lib.environment import LogLevel
from rarhash.lib.exceptions import NoCandidateFound, NotAContainer

from . import TestUnitBase
from ..forge import (
    rar3_archive,
    rar3_file_header,
    rar5_archive,
    rar5_crypt_field,
    rar5_crypt_header,
    rar5_end,
    rar5_file,
    rar5_main,
)

SALT = bytes(range(16))
IV = bytes(range(16, 32))
CHECK = bytes(range(32, 40))


class TestRar2Hash(TestUnitBase):

    def _rar3(self, name='a.rar'):
        return self.write_sample(rar3_archive(rar3_file_header(B'secret.txt', bytes(16), 20)), name)

    def _rar5(self, name='b.rar', entries=1):
        files = [rar5_file(B'f%d' % k, bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)) for k in range(entries)]
        return self.write_sample(rar5_archive(rar5_main(), *files, rar5_end()), name)

    def test_format_a_line(self):
        path = self._rar3()
        lines = list(self.load(path))
        self.assertEqual(lines, [
            F'a.rar:$A3$*1*0001020304050607*deadbeef*16*20*1*{"00" * 16}*33:1::secret.txt'])

    def test_format_b_lines(self):
        path = self._rar5(entries=2)
        lines = list(self.load(path))
        self.assertEqual(len(lines), 2)
        for line in lines:
            self.assertTrue(line.startswith('b.rar:$B5$*16*'))

    def test_self_extracting_archive(self):
        stub = B'MZ' + self.generate_random_buffer(5000)
        path = self.write_sample(rar5_archive(rar5_crypt_header(SALT, 16, CHECK), IV, prefix=stub), 'sfx.exe')
        lines = list(self.load(path))
        self.assertEqual(lines, [F'sfx.exe:$B5$*16*{SALT.hex()}*16*{IV.hex()}*8*{CHECK.hex()}'])

    def test_self_extracting_archive_without_encryption(self):
        stub = B'MZ' + self.generate_random_buffer(4998)
        path = self.write_sample(rar5_archive(rar5_main(), rar5_end(), prefix=stub), 'sfx.exe')
        unit = self.load(path)
        self.assertRaises(NoCandidateFound, list, unit)
        self.assertEqual(unit.archives, 1)

    def test_multiple_paths_in_order(self):
        a = self._rar3()
        b = self._rar5()
        unit = self.load(b, a)
        lines = list(unit)
        self.assertEqual([line.split(':')[0] for line in lines], ['b.rar', 'a.rar'])
        self.assertEqual(unit.archives, 2)
        self.assertEqual(unit.records, 2)

    def test_detached_unit_raises(self):
        path = self.write_sample(B'This is not an archive.', 'c.txt')
        self.assertRaises(NotAContainer, list, self.load(path))

    def test_errors_do_not_stop_processing(self):
        empty = self.write_sample(rar5_archive(rar5_main(), rar5_end()), 'empty.rar')
        junk = self.write_sample(B'junk' * 20, 'junk.bin')
        good = self._rar3()
        unit = self.load(empty, junk, self.workdir + '/missing.rar', good, detached=False)
        unit.log_level = LogLevel.NONE
        lines = list(unit)
        self.assertEqual(len(lines), 1)
        self.assertTrue(lines[0].startswith('a.rar:$A3$*1*'))

    def test_unencrypted_format_a_archive(self):
        path = self.write_sample(rar3_archive(rar3_file_header(B'plain.txt', B'hello', 5, flags=0x8000)), 'plain.rar')
        self.assertRaises(NoCandidateFound, list, self.load(path))

    def test_empty_archive_in_code(self):
        empty = self.write_sample(rar5_archive(rar5_main(), rar5_end()), 'empty.rar')
        self.assertRaises(NoCandidateFound, list, self.load(empty))

    def test_missing_file_in_code(self):
        self.assertRaises(OSError, list, self.load(self.workdir + '/missing.rar'))

    def test_strict_switch(self):
        entry = bytearray(rar5_file(B'a', bytes(16), rar5_crypt_field(SALT, 15, IV, CHECK)))
        entry[1] ^= 0x55
        path = self.write_sample(rar5_archive(rar5_main(), bytes(entry), rar5_end()))
        self.assertEqual(len(list(self.load(path))), 1)
        self.assertEqual(list(self.load('-Q', '-s', path, detached=False)), [])

    def test_command_line(self):
        a = self._rar3()
        missing = self.workdir + '/missing.rar'
        output = io.BytesIO()
        self.unit().run(['-Q', missing, a], stream=output)
        self.assertEqual(output.getvalue().count(B'\n'), 1)
        self.assertTrue(output.getvalue().startswith(B'a.rar:$A3$*1*'))

    def test_command_line_preserves_undecodable_names(self):
        path = self.write_sample(rar3_archive(rar3_file_header(B'caf\xE9', bytes(16), 20)))
        output = io.BytesIO()
        self.unit().run(['-Q', path], stream=output)
        self.assertTrue(output.getvalue().endswith(B':1::caf\xE9\n'))

    def test_argument_interface(self):
        spec = self.unit()._argument_specification
        self.assertEqual(set(spec), {'paths', 'strict'})
        self.assertEqual(spec['strict'].args, ['-s', '--strict'])
        self.assertEqual(spec['strict'].kwargs['action'], 'store_true')
        self.assertEqual(spec['paths'].kwargs['nargs'], '+')

    def test_usage_error(self):
        self.assertRaises(SystemExit, self.unit().run, [], io.BytesIO())
