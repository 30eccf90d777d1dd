import pathlib
import sys

from dbsession.options import records_data_loader

from libb import Setting

FAKE_ENGINE = str(pathlib.Path(__file__).resolve().parent / 'fixtures' / 'fake_engine.py')

Setting.unlock()

fake = Setting()
fake.engine=[sys.executable, FAKE_ENGINE]
fake.timeout=10
fake.poll_interval=0.001
fake.data_loader=records_data_loader

duckdb = Setting()
duckdb.engine='duckdb'
duckdb.timeout=30
duckdb.data_loader=records_data_loader

Setting.lock()
