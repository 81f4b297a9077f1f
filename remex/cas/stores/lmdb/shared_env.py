import logging
import os
import lmdb

logger = logging.getLogger(__name__)

class SharedEnvironment:
    def __init__(self, store_path:str, writemap:bool=False):
        self.store_path = store_path
        os.makedirs(self.store_path, exist_ok=True)
        self.env = lmdb.Environment(
            store_path,
            max_dbs=2,
            # writemap=True makes lmdb much faster, but the DB file becomes as big as the mapsize
            # See: https://lmdb.readthedocs.io/en/release/#writemap-mode
            writemap=writemap,
            metasync=False,
            # flush write buffers asynchronously to disk, ignored if writemap is False
            map_async=True,
            # 10 MB, is ignored if it's bigger already
            map_size=1024*1024*10,
            )
        self._cas_db = self.env.open_db(b'cas')
        self._ac_db = self.env.open_db(b'ac')

    def begin_cas_txn(self, write=True, buffers=False) -> lmdb.Transaction:
        return self.env.begin(db=self._cas_db, write=write, buffers=buffers)

    def begin_ac_txn(self, write=True, buffers=False) -> lmdb.Transaction:
        return self.env.begin(db=self._ac_db, write=write, buffers=buffers)

    def resize(self) -> int:
        current_size = self.env.info()['map_size']
        if current_size > 1024*1024*1024*10: # 10 GB
            multiplier = 1.2
        elif current_size > 1024*1024*1024: # 1 GB
            multiplier = 1.5
        else: # under 1 GB
            multiplier = 3.0
        # must be rounded to an int, otherwise lmdb will segfault later
        new_size = round(current_size * multiplier)
        logger.info(f"Resizing LMDB map from {current_size/1024/1024} MB to {new_size/1024/1024} MB")
        self.env.set_mapsize(new_size)
        return new_size

    def close(self):
        self.env.close()
