from __future__ import annotations

import logging
import os

from aws_cdk import App, Environment
from dotenv import load_dotenv

from src.composition import compose

load_dotenv(".env")

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(levelname)s %(name)s: %(message)s",
)


app: App = App()
AWS_ACCOUNT_ID = os.environ.get("AWS_ACCOUNT_ID", None)
AWS_REGION = os.environ.get("AWS_REGION", None)
ENV_NAME = app.node.try_get_context("env") or os.environ.get("ENV_NAME", "local")

print("#############################################################")
print(f"Deploying '{ENV_NAME}' to account {AWS_ACCOUNT_ID} in region {AWS_REGION}")

# Adjust to your target account/region (or rely on CDK context/CLI)
env = Environment(account=AWS_ACCOUNT_ID, region=AWS_REGION)

compose(app, ENV_NAME, env=env)

app.synth()
