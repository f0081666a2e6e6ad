"""Manifest parsing, durations and value objects."""

import json
from datetime import timedelta

import pytest

from semcache.core import Manifest, PhysicalTableBinding, PreAggregationDefinition, SchemaKey
from semcache.core.errors import ManifestError, StandardErrorCode
from semcache.core.models import ExportLocation, parse_duration


@pytest.mark.parametrize("text, expected", [
    ('500ms', timedelta(milliseconds=500)),
    ('1s', timedelta(seconds=1)),
    ('30m', timedelta(minutes=30)),
    ('2h', timedelta(hours=2)),
    ('1d', timedelta(days=1)),
    (' 1.5 h ', timedelta(minutes=90)),
])
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ['', '10', '5w', 'soon', '0s', '-1m'])
def test_parse_duration_rejects(text):
    with pytest.raises(ManifestError):
        parse_duration(text)


def test_parse_duration_accepts_timedelta():
    assert parse_duration(timedelta(seconds=3)) == timedelta(seconds=3)
    with pytest.raises(ManifestError):
        parse_duration(timedelta(0))


def test_manifest_from_dict():
    manifest = Manifest.from_dict({
        'catalog': 'canner',
        'schema': 'tpch',
        'preAggregations': [
            {'name': 'revenue', 'sql': 'SELECT 1', 'refreshTime': '1h'},
            {'name': 'orders', 'sql': 'SELECT 2'},
        ],
    })

    assert manifest.session_context.catalog == 'canner'
    assert manifest.session_context.schema == 'tpch'
    assert manifest.get_pre_aggregation('revenue').refresh_time == timedelta(hours=1)
    assert manifest.get_pre_aggregation('orders').refresh_time == timedelta(minutes=30)
    assert manifest.get_pre_aggregation('missing') is None


@pytest.mark.parametrize("document", [
    {'schema': 'tpch'},
    {'catalog': 'canner'},
    {'catalog': 'canner', 'schema': 'tpch', 'preAggregations': [{'sql': 'SELECT 1'}]},
    {'catalog': 'canner', 'schema': 'tpch', 'preAggregations': [{'name': 'x'}]},
    {'catalog': 'canner', 'schema': 'tpch', 'preAggregations': [
        {'name': 'x', 'sql': 'SELECT 1'}, {'name': 'x', 'sql': 'SELECT 2'}]},
])
def test_invalid_manifest(document):
    with pytest.raises(ManifestError) as excinfo:
        Manifest.from_dict(document)
    assert excinfo.value.error_code is StandardErrorCode.GENERIC_USER_ERROR


def test_manifest_load(tmp_path):
    path = tmp_path / 'manifest.json'
    path.write_text(json.dumps({'catalog': 'c', 'schema': 's',
                                'preAggregations': [{'name': 'a', 'sql': 'SELECT 1'}]}))
    manifest = Manifest.load(path)
    assert [d.name for d in manifest.pre_aggregations] == ['a']


def test_manifest_load_errors(tmp_path):
    with pytest.raises(ManifestError):
        Manifest.load(tmp_path / 'missing.json')

    broken = tmp_path / 'broken.json'
    broken.write_text('{not json')
    with pytest.raises(ManifestError):
        Manifest.load(broken)


def test_schema_key():
    key = SchemaKey('canner', 'tpch', 'revenue')
    assert str(key) == 'canner.tpch.revenue'
    assert key.in_schema('canner', 'tpch')
    assert not key.in_schema('canner', 'other')
    assert key == SchemaKey('canner', 'tpch', 'revenue')


def test_binding_states():
    definition = PreAggregationDefinition('revenue', 'SELECT 1')
    ready = PhysicalTableBinding.succeeded(definition, 'revenue_abc', 1.0)
    failed = PhysicalTableBinding.failed(definition, 'boom', 2.0)

    assert ready.is_ready and ready.error_message is None
    assert not failed.is_ready and failed.table_name is None
    assert failed.create_time == 2.0


def test_export_location_glob():
    assert ExportLocation('/exports/a', '*.parquet').glob == '/exports/a/*.parquet'
