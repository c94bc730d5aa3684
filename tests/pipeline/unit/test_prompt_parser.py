import json

import pytest

from template_pipeline.prompt_parser import (
    PromptParseError,
    guess_extension,
    parse_npm_line,
    parse_prompt,
    resolve_section_kind,
)


FULL_PROMPT = '''# Pricing Table
Slug: Pricing Table V2
Description: Three tier pricing grid

Shown on the landing page.

## Component
```tsx filename=PricingTable.tsx export=PricingTable
export const PricingTable = () => <div>pricing</div>;
```

## Demo
```tsx
export default () => <PricingTable />;
```

```tsx
export const Ignored = () => null;
```

## Dependencies
```ts filename=lib/format.ts kind=util
export const fmt = (n: number) => `$${n}`;
```

```js
export const noop = () => {};
```

## Styles
```css filename="pricing table.css"
.pricing { display: grid; }
```

## Assets
```svg filename=logo.svg encoding=utf8 content-type=image/svg+xml
<svg></svg>
```

## npm
- react@^18.2.0
- clsx: v2.1.0,
- framer-motion 11.0.0

## Notes
- @field title: string = "Plans"
1. @field highlighted: boolean
'''


def test_hero_example_parses_with_five_warnings():
    result = parse_prompt('# Hero\n## 主组件\n```tsx\nexport const Hero=()=>null\n```')

    assert result.prompt.name == 'Hero'
    assert result.prompt.slug == 'hero'
    assert result.prompt.component.code == 'export const Hero=()=>null'
    assert result.prompt.component.filename == 'hero.tsx'
    assert sorted(w.section for w in result.warnings) == ['assets', 'demo', 'dependencies', 'npm', 'styles']


def test_full_markdown_prompt():
    result = parse_prompt(FULL_PROMPT)
    prompt = result.prompt

    assert result.warnings == []
    assert prompt.name == 'Pricing Table'
    assert prompt.slug == 'pricing-table-v2'
    assert prompt.description == 'Three tier pricing grid'
    assert prompt.component.filename == 'PricingTable.tsx'
    assert prompt.component.export_name == 'PricingTable'

    assert prompt.demo.code == 'export default () => <PricingTable />;'
    assert prompt.demo.filename == 'pricing-table-v2.demo.tsx'

    assert [d.filename for d in prompt.dependencies] == ['lib/format.ts', 'dependency-2.js']
    assert prompt.dependencies[0].kind == 'util'

    assert prompt.styles[0].filename == 'pricing table.css'
    assert prompt.assets[0].encoding == 'utf8'
    assert prompt.assets[0].content_type == 'image/svg+xml'

    assert [(p.name, p.version) for p in prompt.npm_packages] == [
        ('react', '^18.2.0'),
        ('clsx', '2.1.0'),
        ('framer-motion', '11.0.0'),
    ]
    assert prompt.notes == ['@field title: string = "Plans"', '@field highlighted: boolean']


def test_headings_inside_fences_are_not_sections():
    text = '# Card\n## Component\n```md\n## Demo\nnot a heading\n```\n'
    result = parse_prompt(text)

    assert '## Demo' in result.prompt.component.code
    assert result.prompt.demo is None
    assert any(w.section == 'demo' for w in result.warnings)


@pytest.mark.parametrize('text', [
    '# Broken\n## Component\n```tsx\nexport const A = 1\n',
    '# Broken\n## Component\n```tsx\nconst a = 1\n```\n## Styles\n```css\n.a{}\n',
])
def test_unterminated_fence_raises(text):
    with pytest.raises(PromptParseError, match='unterminated code fence'):
        parse_prompt(text)


def test_missing_component_section_raises():
    with pytest.raises(PromptParseError, match='missing component section'):
        parse_prompt('# Only demo\n## Demo\n```tsx\nx\n```')


def test_component_without_fence_raises():
    with pytest.raises(PromptParseError, match='missing code fence'):
        parse_prompt('# Empty\n## Component\njust words')


def test_empty_input_raises():
    with pytest.raises(PromptParseError):
        parse_prompt('   \n ')


def test_json_prompt_passthrough():
    payload = {
        'name': 'Stats Card',
        'component': {'code': '<div>Stats</div>', 'exportName': 'StatsCard'},
        'npmPackages': [{'name': 'clsx', 'version': '^2.0.0'}],
        'owner': 'design-team',
    }
    result = parse_prompt(json.dumps(payload))

    assert result.warnings == []
    assert result.prompt.slug == 'stats-card'
    assert result.prompt.component.export_name == 'StatsCard'
    assert result.prompt.npm_packages[0].name == 'clsx'
    assert result.prompt.model_dump(by_alias=True)['owner'] == 'design-team'


@pytest.mark.parametrize('text', ['[1, 2]', '{"name": "x"}', '{"component": {"code": ""}}', '{not json'])
def test_invalid_json_prompts_raise(text):
    with pytest.raises(PromptParseError):
        parse_prompt(text)


def test_section_resolution_prefers_exact_alias():
    assert resolve_section_kind('Demo Code') == 'demo'
    assert resolve_section_kind('NPM Packages') == 'npm'
    assert resolve_section_kind('Styles') == 'styles'
    assert resolve_section_kind('Changelog') is None


def test_npm_line_formats():
    assert parse_npm_line('@radix-ui/react-dialog@1.0.5').name == '@radix-ui/react-dialog'
    assert parse_npm_line('lodash').version is None
    assert parse_npm_line('   ') is None


def test_guess_extension_fallbacks():
    assert guess_extension('TSX') == 'tsx'
    assert guess_extension('scss') == 'scss'
    assert guess_extension(None, 'css') == 'css'
    assert guess_extension('python', 'bin') == 'bin'
