from typing import Any, Dict
import boto3
import os
from boto3.resources.base import ServiceResource
from botocore.exceptions import BotoCoreError, ClientError
from functools import cache
from aws_lambda_powertools import Logger

logger = Logger()

# Cache for parameters
_parameter_cache: Dict[str, str] = {}


def get_region_name() -> str:
    """
    Get the AWS region name from environment variable.
    Uses AWS_REGION if set, otherwise lets boto3 use its default region resolution.

    Returns:
        str: The AWS region name or None to let boto3 handle region resolution.
    """
    return os.getenv("AWS_REGION")


def _client_kwargs() -> Dict[str, Any]:
    region = get_region_name()
    return {"region_name": region} if region else {}


@cache
def get_dynamodb_resource() -> ServiceResource:
    """
    Get a DynamoDB resource instance.

    Returns:
        boto3.resources.base.ServiceResource: The DynamoDB resource.
    """
    return boto3.resource("dynamodb", **_client_kwargs())


@cache
def get_ddb_table(table_name: str) -> Any:
    return get_dynamodb_resource().Table(table_name)


@cache
def get_ses_client() -> Any:
    return boto3.client("ses", **_client_kwargs())


@cache
def get_lambda_client() -> Any:
    return boto3.client("lambda", **_client_kwargs())


@cache
def get_ssm_client() -> Any:
    return boto3.client("ssm", **_client_kwargs())


def get_parameter(name: str, default_value: str = "") -> str:
    """
    Resolve a secret or setting.

    The upper-cased environment variable wins (local runs and tests), then
    Parameter Store under PARAMETER_PREFIX, cached for the life of the
    container.

    Args:
        name: Parameter name without prefix, e.g. "stripe_secret_key"
        default_value: Returned when neither source has a value

    Returns:
        str: The parameter value
    """
    env_value = os.environ.get(name.upper())
    if env_value:
        return env_value

    if name in _parameter_cache:
        return _parameter_cache[name]

    prefix = os.environ.get("PARAMETER_PREFIX", "/futurecast/")
    try:
        response = get_ssm_client().get_parameter(Name=f"{prefix}{name}", WithDecryption=True)
        value = response["Parameter"]["Value"]
        _parameter_cache[name] = value
        return value
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Failed to get parameter {prefix}{name}: {e}")
        return default_value
