import pytest

from template_pipeline.template_events import (
    TEMPLATE_IMPORT_FAILED,
    TEMPLATE_IMPORTED,
    TemplateEventBus,
    TemplateImportedPayload,
    TemplateImportFailedPayload,
)


def _imported(import_id='imp-1'):
    return TemplateImportedPayload(import_id=import_id, user_id='u1', components=['hero'])


def test_listeners_run_in_registration_order():
    bus = TemplateEventBus()
    calls = []
    bus.on_imported(lambda payload: calls.append(('first', payload.import_id)))
    bus.on_imported(lambda payload: calls.append(('second', payload.import_id)))

    assert bus.emit_imported(_imported()) == 2
    assert calls == [('first', 'imp-1'), ('second', 'imp-1')]


def test_failing_listener_does_not_block_others():
    bus = TemplateEventBus()
    calls = []

    def broken(payload):
        raise RuntimeError('boom')

    bus.on_imported(broken)
    bus.on_imported(lambda payload: calls.append(payload.import_id))

    assert bus.emit_imported(_imported()) == 1
    assert calls == ['imp-1']


def test_disposer_unregisters():
    bus = TemplateEventBus()
    calls = []
    dispose = bus.on_import_failed(calls.append)

    dispose()
    bus.emit_import_failed(TemplateImportFailedPayload(import_id='x', user_id='u', error='bad'))

    assert calls == []
    assert bus.listener_count(TEMPLATE_IMPORT_FAILED) == 0


def test_once_fires_a_single_time():
    bus = TemplateEventBus()
    calls = []
    bus.once(TEMPLATE_IMPORTED, calls.append)

    bus.emit_imported(_imported('a'))
    bus.emit_imported(_imported('b'))

    assert [p.import_id for p in calls] == ['a']


def test_remove_all_for_one_event_or_everything():
    bus = TemplateEventBus()
    bus.on_imported(lambda p: None)
    bus.on_import_failed(lambda p: None)

    bus.remove_all(TEMPLATE_IMPORTED)
    assert bus.listener_count(TEMPLATE_IMPORTED) == 0
    assert bus.listener_count(TEMPLATE_IMPORT_FAILED) == 1

    bus.remove_all()
    assert bus.listener_count(TEMPLATE_IMPORT_FAILED) == 0


def test_unknown_event_is_rejected():
    with pytest.raises(ValueError):
        TemplateEventBus().on('template.deleted', lambda p: None)
