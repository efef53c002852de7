from contextlib import contextmanager
import re
from typing import Any, Iterator, Literal, Optional

import requests
from pulumi import log

from configs.generated.firewall_pkl import firewall as pfw

NAME_PREFIX_PATTERN = r"^[a-z][a-z0-9]{0,7}$"
STORAGE_ACCOUNT_NAME_PATTERN = r"^[a-z0-9]{3,24}$"
KEY_VAULT_NAME_PATTERN = r"^[a-zA-Z](?!.*--)[a-zA-Z0-9-]{1,22}[a-zA-Z0-9]$"


def load_pkl_config(
    resource_type: Literal["firewall"],
    pkl_config_file: str,
) -> Any:
    """
    Loads and returns the evaluated Pkl config for the given resource_type.
    Supported types: 'firewall'.
    """

    # Map resource_type to their loader and module class
    resource_map = {
        "firewall": {
            "loader": pfw.load_pkl,
            "module": pfw,
            "attrs": ["policy", "ipGroups", "ruleCollectionGroups"],
        },
    }

    if resource_type not in resource_map:
        raise ValueError(f"Unsupported resource type: {resource_type}")

    resource = resource_map[resource_type]
    pkl_config = resource["loader"](pkl_config_file)
    # pfw(policy=..., ipGroups=..., ruleCollectionGroups=...)
    return resource["module"](
        **{attr: getattr(pkl_config, attr) for attr in resource["attrs"]}
    )


def merge_tags(
    default_tags: dict[str, str], extra_tags: Optional[dict[str, str]]
) -> dict[str, str]:
    return {**default_tags, **(extra_tags or {})}


def validate_name_prefix(prefix: str) -> str:
    if not re.match(NAME_PREFIX_PATTERN, prefix):
        raise ValueError(
            f"name prefix '{prefix}' is invalid. Use 1-8 lowercase letters or digits, starting with a letter."  # noqa: E501
        )
    return prefix


def storage_account_name(prefix: str, suffix: str) -> str:
    """
    Globally unique storage account name: `<prefix>st<suffix>`.
    """
    name = f"{prefix}st{suffix}".lower()
    if not re.match(STORAGE_ACCOUNT_NAME_PATTERN, name):
        raise ValueError(
            f"storage account name '{name}' must be 3-24 lowercase letters or digits."  # noqa: E501
        )
    return name


def key_vault_name(prefix: str, suffix: str) -> str:
    """
    Globally unique key vault name: `<prefix>-kv-<suffix>`.
    """
    name = f"{prefix}-kv-{suffix}".lower()
    if not re.match(KEY_VAULT_NAME_PATTERN, name):
        raise ValueError(
            f"key vault name '{name}' must be 3-24 letters, digits or single hyphens, starting with a letter."  # noqa: E501
        )
    return name


def get_my_public_ip() -> str:
    my_ip = requests.get("https://api.ipify.org", timeout=10).text.strip()
    return f"{my_ip}/32"


@contextmanager
def provisioning_step(name: str) -> Iterator[None]:
    """
    Wraps one step of a sequential provisioning program. A failure is logged
    and re-raised, which aborts the remaining steps.
    """
    log.info(f"Provisioning step started: {name}")
    try:
        yield
    except Exception as e:
        log.error(f"Provisioning step '{name}' failed: {e}")
        raise
    log.info(f"Provisioning step completed: {name}")


def spec_list_converter(spec_class: type):
    """
    attrs converter turning a list of config dicts into spec instances.
    """

    def convert(items: Optional[list]) -> list:
        return [
            item if isinstance(item, spec_class) else spec_class(**item)
            for item in items or []
        ]

    return convert
