import pytest

from template_pipeline.path_utils import (
    UnsafePathError,
    ensure_relative,
    resolve_inside,
    sanitize_filename,
    slugify,
    to_kebab_case,
)


@pytest.mark.parametrize('value, expected', [
    ('Hero Banner', 'hero-banner'),
    ('  --Pricing__Table v2!! ', 'pricing-table-v2'),
    ('主组件', ''),
])
def test_slugify(value, expected):
    assert slugify(value) == expected


def test_to_kebab_case():
    assert to_kebab_case('PricingTable') == 'pricing-table'
    assert to_kebab_case('***') == 'component'


def test_ensure_relative_normalizes():
    assert ensure_relative('/styles//./hero.css') == 'styles/hero.css'
    assert ensure_relative('a/b/../c.ts') == 'a/c.ts'


@pytest.mark.parametrize('path', ['', '.', '..', '../x', 'a/../../x'])
def test_ensure_relative_rejects_escape(path):
    with pytest.raises(UnsafePathError):
        ensure_relative(path)


def test_sanitize_filename_replaces_illegal_characters():
    assert sanitize_filename('icons\\hero icon@2x.png') == 'icons/hero-icon-2x.png'


def test_resolve_inside(tmp_path):
    assert resolve_inside(tmp_path, 'a/b.txt') == (tmp_path / 'a' / 'b.txt').resolve()
    with pytest.raises(UnsafePathError):
        resolve_inside(tmp_path, '../escape.txt')
