"""
Step definition code generator
Renders skeleton step definitions for steps without an implementation
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader

from stepcover.parser.pattern_compiler import extract_parameter_names
from stepcover.utils.helpers import function_name_for, unique_name

TEMPLATE_DIR = Path(__file__).parent / 'templates'

IMPORT_LINE = 'from stepcover import given, when, then'


@dataclass(frozen=True)
class StepTemplate:
    keyword: str
    pattern: str
    function_name: str
    parameters: Tuple[str, ...]
    description: str


def _doctext(text: str) -> str:
    return text.replace('\\', '\\\\').replace('"', '\\"')


class CodeGenerator:
    """Render step definition skeletons with Jinja2 templates"""

    def __init__(self, template_dir: Optional[Path] = None,
                 template_name: str = 'step_definition.py.j2'):
        self.environment = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=False,
            keep_trailing_newline=False,
        )
        self.environment.filters['pyrepr'] = repr
        self.environment.filters['doctext'] = _doctext
        self.template_name = template_name

    @staticmethod
    def build_template(keyword: str, pattern: str, description: str,
                       taken: Optional[set] = None) -> StepTemplate:
        """Describe one skeleton, function names are made unique within taken"""
        name = function_name_for(description)
        if taken is not None:
            name = unique_name(name, taken)

        return StepTemplate(
            keyword=keyword,
            pattern=pattern,
            function_name=name,
            parameters=tuple(extract_parameter_names(pattern)),
            description=description,
        )

    def render_step(self, template: StepTemplate) -> str:
        """Render a single registration with a not-implemented body"""
        return self.environment.get_template(self.template_name).render(
            keyword=template.keyword,
            pattern=template.pattern,
            function_name=template.function_name,
            arguments=['context', *template.parameters],
            description=template.description,
        ).rstrip('\n')

    def render_module(self, groups: Sequence[Tuple[Optional[str], Iterable[StepTemplate]]],
                      include_imports: bool = True, include_comments: bool = True) -> str:
        """Render groups of skeletons, each optionally headed by a comment naming its file"""
        blocks: List[str] = []

        if include_imports:
            blocks.append(IMPORT_LINE)

        for title, templates in groups:
            rendered = [self.render_step(template) for template in templates]
            if not rendered:
                continue
            if title and include_comments:
                rendered[0] = f"# Missing step definitions for {title}\n{rendered[0]}"
            blocks.extend(rendered)

        if not blocks:
            return ''

        return '\n\n\n'.join(blocks) + '\n'
