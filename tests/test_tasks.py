"""Task registry."""

from datetime import datetime, timedelta, timezone

from semcache.core import TaskStatus
from semcache.core.tasks import PreAggregationTable, TaskRegistry


def table(name, error=None):
    return PreAggregationTable(name, error, timedelta(minutes=30), datetime.now(timezone.utc))


def test_register_and_complete():
    registry = TaskRegistry()
    info = registry.register('c', 's')

    assert info.status is TaskStatus.RUNNING
    assert info.end_time is None
    assert not registry.completion(info.task_id).done()

    done = registry.complete(info.task_id, [table('a'), table('b', 'boom')])

    assert done.status is TaskStatus.DONE
    assert done.end_time >= done.start_time
    assert [t.name for t in done.pre_aggregation_tables] == ['a', 'b']
    assert registry.completion(info.task_id).result(timeout=1) == done
    # Earlier snapshots are unaffected
    assert info.status is TaskStatus.RUNNING


def test_get_returns_copies():
    registry = TaskRegistry()
    info = registry.register('c', 's')

    copy = registry.get(info.task_id)
    copy.pre_aggregation_tables.append(table('x'))

    assert registry.get(info.task_id).pre_aggregation_tables == []
    assert registry.get('unknown') is None
    assert registry.completion('unknown') is None


def test_list_filters():
    registry = TaskRegistry()
    first = registry.register('c', 's')
    second = registry.register('c', 'other')
    third = registry.register('d', 's')
    registry.complete(first.task_id, [])

    def ids(**filters):
        return [t.task_id for t in registry.list(**filters)]

    assert ids() == [first.task_id, second.task_id, third.task_id]
    assert ids(catalog='c') == [first.task_id, second.task_id]
    assert ids(catalog='c', schema='s') == [first.task_id]
    assert ids(catalog='', schema='s') == [first.task_id, third.task_id]
    assert ids(in_progress=True) == [second.task_id, third.task_id]
    assert ids(in_progress=False) == [first.task_id]
    assert ids(catalog='c', schema='s', in_progress=True) == []
    assert len(registry) == 3
