"""End-to-end runs of the semcache-run command line."""

import csv
import json

import duckdb
import pytest

from semcache.run import main


@pytest.fixture
def warehouse_file(tmp_path):
    path = tmp_path / 'warehouse.duckdb'
    connection = duckdb.connect(str(path))
    connection.execute("CREATE TABLE orders AS SELECT range AS id, range % 3 AS bucket FROM range(100)")
    connection.close()
    return path


def write_manifest(tmp_path, *definitions):
    path = tmp_path / 'manifest.json'
    path.write_text(json.dumps({'catalog': 'canner', 'schema': 'sales', 'preAggregations': list(definitions)}))
    return path


def run(argv):
    with pytest.raises(SystemExit) as excinfo:
        main([str(arg) for arg in argv])
    return excinfo.value.code


def test_refresh_and_query_to_csv(tmp_path, warehouse_file, capsys):
    manifest = write_manifest(tmp_path, {
        'name': 'buckets',
        'sql': 'SELECT bucket, count(*) AS n FROM orders GROUP BY bucket',
        'refreshTime': '1h',
    })
    output = tmp_path / 'out.csv'

    code = run([
        '--manifest', manifest,
        '--source-database', warehouse_file,
        '--export-dir', tmp_path / 'exports',
        '--refresh-workers', 1,
        '--sql', "SELECT count(*) AS tables FROM information_schema.tables WHERE table_name LIKE 'buckets_%'",
        '--output', output,
    ])

    assert code == 0
    assert '✅ buckets' in capsys.readouterr().out
    with open(output, newline='') as f:
        assert list(csv.reader(f)) == [['tables'], ['1']]


def test_failed_pre_aggregation_exits_1(tmp_path, warehouse_file, capsys):
    manifest = write_manifest(tmp_path, {'name': 'broken', 'sql': 'SELECT * FROM no_such_table'})

    code = run(['--manifest', manifest, '--source-database', warehouse_file,
                '--export-dir', tmp_path / 'exports'])

    assert code == 1
    assert '❌ broken: Failed to do pre-aggregation for broken' in capsys.readouterr().out


def test_source_database_from_environment(tmp_path, warehouse_file, monkeypatch, capsys):
    monkeypatch.setenv('SEMCACHE_SOURCE_DATABASE', str(warehouse_file))
    monkeypatch.setenv('SEMCACHE_EXPORT_DIR', str(tmp_path / 'exports'))
    manifest = write_manifest(tmp_path, {'name': 'buckets', 'sql': 'SELECT DISTINCT bucket FROM orders'})

    assert run(['--manifest', manifest]) == 0
    out = capsys.readouterr().out
    assert f"Source database: {warehouse_file}" in out
    assert '✅ buckets' in out


def test_bad_environment_exits_2(tmp_path, warehouse_file, monkeypatch):
    monkeypatch.setenv('SEMCACHE_REFRESH_WORKERS', 'lots')
    manifest = write_manifest(tmp_path, {'name': 'a', 'sql': 'SELECT 1'})
    assert run(['--manifest', manifest, '--source-database', warehouse_file]) == 2


def test_bad_manifest_exits_2(tmp_path, warehouse_file):
    assert run(['--manifest', tmp_path / 'missing.json', '--source-database', warehouse_file]) == 2


def test_missing_source_database_exits_2(tmp_path):
    manifest = write_manifest(tmp_path, {'name': 'a', 'sql': 'SELECT 1'})
    assert run(['--manifest', manifest, '--export-dir', tmp_path / 'exports']) == 2
