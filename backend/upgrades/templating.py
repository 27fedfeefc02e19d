from jinja2 import Environment, PackageLoader, select_autoescape

env = Environment(
    loader=PackageLoader("upgrades", "templates"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_template(name: str, **context) -> str:
    return env.get_template(name).render(**context)
