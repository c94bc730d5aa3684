import base64
import io
import json
import zipfile
from pathlib import Path

import pytest

from template_pipeline.pipeline_metrics import PipelineMetricsCollector
from template_pipeline.pipeline_orchestrator import ImporterRequiredError, PipelineError, run_pipeline
from template_pipeline.prompt_models import ParsedPrompt
from template_pipeline.prompt_parser import parse_prompt


def _feature_grid():
    return ParsedPrompt.model_validate({
        'name': 'Feature Grid',
        'component': {'code': '<section class="grid">Features</section>'},
        'demo': {'code': '<FeatureGrid />'},
        'styles': [{'filename': 'feature-grid.css', 'content': '.grid { display: grid; }'}],
        'npmPackages': [{'name': 'clsx', 'version': '^2.0.0'}],
        'notes': ['@field title: string = "Our Features"'],
    })


def test_pipeline_produces_zip_with_schema_and_preview(tmp_path):
    result = run_pipeline(_feature_grid(), user_id='u_test', existing_package_json_path=str(tmp_path / 'none.json'))

    names = zipfile.ZipFile(io.BytesIO(result.zip_bytes)).namelist()
    assert 'schema.json' in names
    assert 'defaults.json' in names
    assert 'preview.html' in names
    assert any(name.endswith('.tsx') for name in names)
    assert all('\\' not in name and not name.startswith('/') for name in names)

    assert [dep.name for dep in result.package_patch.add_dependencies] == ['clsx']
    assert json.loads(Path(result.defaults_path).read_text(encoding='utf-8')) == {'title': '"Our Features"'}
    assert result.import_result is None


def test_zip_round_trip_preserves_artifact_bytes(tmp_path):
    logo = b'\x00\x01binary\xff'
    prompt = ParsedPrompt.model_validate({
        'name': 'Card',
        'component': {'code': 'export const Card = () => null;'},
        'dependencies': [{'filename': 'helpers.ts', 'content': 'export const h = 1;'}],
        'styles': [{'filename': 'card.css', 'content': '.card { color: red; }'}],
        'assets': [{'filename': 'logo.bin', 'content': base64.b64encode(logo).decode(), 'encoding': 'base64'}],
    })

    result = run_pipeline(prompt, user_id='u1', existing_package_json_path=str(tmp_path / 'none.json'))
    archive = zipfile.ZipFile(io.BytesIO(result.zip_bytes))

    assert archive.read('components/deps/helpers.ts') == b'export const h = 1;'
    assert archive.read('styles/card.css') == b'.card { color: red; }'
    assert archive.read('public/logo.bin') == logo
    assert archive.read('components/ui/card.tsx') == b'export const Card = () => null;'


def test_warnings_from_every_stage_are_collected(tmp_path):
    manifest = tmp_path / 'package.json'
    manifest.write_text(json.dumps({'dependencies': {'clsx': '^2.0.0'}}))
    prompt = ParsedPrompt.model_validate({
        'name': 'Bare',
        'component': {'code': 'x'},
        'npmPackages': [{'name': 'clsx', 'version': '^2.1.0'}],
    })

    result = run_pipeline(prompt, user_id='u1', existing_package_json_path=str(manifest))

    assert result.warnings == [
        'Demo section missing in parsed prompt',
        'No @field metadata found; schema contains no configurable properties',
        'Preview rendered without demo; fallback to component export',
        'Dependency clsx@^2.1.0 already satisfied by ^2.0.0',
    ]


def test_importer_receives_zip_when_auto_import(tmp_path):
    calls = []

    def importer(zip_bytes, user_id, request_id=None):
        calls.append((len(zip_bytes), user_id, request_id))
        return {'ok': True, 'length': len(zip_bytes), 'userId': user_id}

    result = run_pipeline(
        _feature_grid(),
        user_id='u_demo',
        request_id='req-7',
        auto_import=True,
        importer=importer,
        existing_package_json_path=str(tmp_path / 'none.json'),
    )

    assert calls == [(len(result.zip_bytes), 'u_demo', 'req-7')]
    assert result.import_result == {'ok': True, 'length': len(result.zip_bytes), 'userId': 'u_demo'}


def test_missing_user_id_fails_fast():
    with pytest.raises(PipelineError):
        run_pipeline(_feature_grid(), user_id='')


def test_auto_import_without_importer_fails_before_building(monkeypatch):
    def explode(*args, **kwargs):
        raise AssertionError('build should not run')

    monkeypatch.setattr('template_pipeline.pipeline_orchestrator.build_component', explode)

    with pytest.raises(ImporterRequiredError):
        run_pipeline(_feature_grid(), user_id='u1', auto_import=True)


def test_metrics_record_package_and_import_stages(tmp_path):
    metrics = PipelineMetricsCollector()

    def failing_importer(zip_bytes, user_id, request_id=None):
        raise RuntimeError('storage offline')

    with pytest.raises(RuntimeError):
        run_pipeline(
            _feature_grid(),
            user_id='u1',
            auto_import=True,
            importer=failing_importer,
            metrics=metrics,
            existing_package_json_path=str(tmp_path / 'none.json'),
        )

    events = metrics.events()
    assert [(e.stage, e.status) for e in events] == [('package', 'success'), ('import', 'failure')]
    assert events[0].template_slug == 'feature-grid'
    assert events[1].reason == 'storage offline'


def test_markdown_prompt_end_to_end(tmp_path):
    parsed = parse_prompt(
        '# Hero\nSlug: hero\n\n## Component\n```tsx filename=Hero.tsx\nexport default () => null\n```\n'
        '## Demo\n```tsx\nexport default () => null\n```\n'
        '## Notes\n- @field dark: boolean\n'
    )

    result = run_pipeline(parsed.prompt, user_id='u1', existing_package_json_path=str(tmp_path / 'none.json'))
    names = zipfile.ZipFile(io.BytesIO(result.zip_bytes)).namelist()

    assert result.slug == 'hero'
    assert 'components/ui/Hero.tsx' in names
    assert 'components/ui/__demos__/hero.demo.tsx' in names
    assert json.loads(Path(result.schema_path).read_text(encoding='utf-8'))['properties'] == {'dark': {'type': 'boolean'}}


def _reject(token):
    raise ValueError(token)


def test_defaults_file_is_strict_json_for_non_finite_numbers(tmp_path):
    prompt = _feature_grid().model_copy(update={'notes': ['@field a: number = Infinity', '@field b: number = nan']})

    result = run_pipeline(prompt, user_id='u_test', existing_package_json_path=str(tmp_path / 'none.json'))

    text = Path(result.defaults_path).read_text(encoding='utf-8')
    assert json.loads(text, parse_constant=_reject) == {'a': None, 'b': None}
