"""Allow ``python -m querydoctor``."""

from querydoctor.cli.main import app

app()
