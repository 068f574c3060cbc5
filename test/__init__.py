import logging
import os
import random
import rarhash
import shutil
import tempfile
import unittest


__all__ = ['rarhash', 'TestBase']


class TestBase(unittest.TestCase):

    def generate_random_buffer(self, size):
        return bytes(random.randrange(0, 0x100) for _ in range(size))

    def write_sample(self, data: bytes, name: str = 'sample.rar') -> str:
        path = os.path.join(self.workdir, name)
        with open(path, 'wb') as stream:
            stream.write(data)
        return path

    @property
    def workdir(self) -> str:
        try:
            return self._workdir
        except AttributeError:
            self._workdir = wd = tempfile.mkdtemp(prefix='rarhash-test-')
            self.addCleanup(shutil.rmtree, wd, True)
            return wd

    def setUp(self):
        random.seed(0xBAADF00D)  # guarantee deterministic 'random' buffers
        logging.disable(logging.CRITICAL)

    def assertContains(self, container, member, msg=None):
        self.assertIn(member, container, msg)
