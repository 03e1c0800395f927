# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import os

import typer

from postforge.client.cli import (
    cron_command,
    deploy_command,
    edit_command,
    generate_command,
    review_command,
    status_command,
)
from postforge.logging import configure_logging
from postforge.server.cli import server_app


app = typer.Typer(help="Postforge blog post pipeline CLI")
app.add_typer(server_app, name="server")
app.command(name="generate", help="Create a post generation job.")(generate_command)
app.command(name="status", help="Show a job, or list recent jobs.")(status_command)
app.command(name="review", help="Submit a review decision for a job.")(review_command)
app.command(name="edit", help="Replace the content of a job awaiting review.")(edit_command)
app.command(name="deploy", help="Approve or reject deploying a job.")(deploy_command)
app.command(name="cron", help="Run every due schedule once.")(cron_command)


@app.callback()
def main_callback() -> None:
    """
    Postforge: a staged blog post generation pipeline.
    """
    configure_logging(os.environ.get("POSTFORGE_LOG_LEVEL", "INFO"))


if __name__ == "__main__":
    app()
