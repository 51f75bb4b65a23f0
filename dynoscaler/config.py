import json
import os
from typing import Any, Dict, List, NamedTuple, Optional

from dynoscaler.models import ScalingPolicy

class Config(NamedTuple):
    """Configuration for the dynoscaler."""
    # RabbitMQ configuration
    rabbitmq_host: str
    rabbitmq_port: Optional[int]
    rabbitmq_username: str
    rabbitmq_password: str
    rabbitmq_vhost: Optional[str]
    rabbitmq_use_ssl: bool

    # Heroku configuration
    heroku_api_key: str
    heroku_app: str

    # Scaling configuration
    policies: List[ScalingPolicy]
    check_interval: float
    request_timeout: float


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('true', '1', 't', 'yes')


def _non_negative_int(value: Any, what: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{what} must be an integer, got {value!r}")
    if number < 0:
        raise ValueError(f"{what} must not be negative, got {number}")
    return number


def parse_policies(raw_policies: Any) -> List[ScalingPolicy]:
    """
    Build scaling policies from their JSON form.

    Accepts either a JSON string or an already decoded list of objects with
    ``queue_name``, ``process_type`` and ``thresholds`` keys. Threshold keys
    may be strings since JSON object keys always are.

    Raises:
        ValueError: If a policy is malformed
    """
    if isinstance(raw_policies, str):
        try:
            raw_policies = json.loads(raw_policies)
        except json.JSONDecodeError as e:
            raise ValueError(f"Scaling policies are not valid JSON: {e}")

    if not isinstance(raw_policies, list):
        raise ValueError("Scaling policies must be a list")

    policies = []
    process_types = set()
    for index, raw in enumerate(raw_policies):
        if not isinstance(raw, dict):
            raise ValueError(f"Scaling policy #{index} must be an object")

        missing = [key for key in ('queue_name', 'process_type') if not raw.get(key)]
        if missing:
            raise ValueError(f"Scaling policy #{index} is missing: {', '.join(missing)}")

        if raw['process_type'] in process_types:
            raise ValueError(f"Process type {raw['process_type']} is scaled by more than one policy")
        process_types.add(raw['process_type'])

        raw_thresholds = raw.get('thresholds') or {}
        if not isinstance(raw_thresholds, dict):
            raise ValueError(f"Scaling policy #{index} thresholds must be an object")

        thresholds = {}
        for min_backlog, workers in raw_thresholds.items():
            key = _non_negative_int(min_backlog, f"Threshold key in policy #{index}")
            if key in thresholds:
                raise ValueError(f"Duplicate threshold {key} in policy #{index}")
            thresholds[key] = _non_negative_int(workers, f"Worker count for threshold {key} in policy #{index}")

        policies.append(ScalingPolicy(
            queue_name=raw['queue_name'],
            process_type=raw['process_type'],
            thresholds=thresholds
        ))

    return policies


def _load_raw_policies(overrides: Dict[str, Any]) -> Any:
    if overrides.get('policies') is not None:
        return overrides['policies']

    # Overrides win over the environment, an inline policy list wins over a file
    policies_file = overrides.get('policies_file')
    if not policies_file:
        if os.environ.get('SCALING_POLICIES'):
            return os.environ['SCALING_POLICIES']
        policies_file = os.environ.get('SCALING_POLICIES_FILE')

    if policies_file:
        with open(policies_file, 'r', encoding='utf-8') as f:
            return f.read()

    return []


def load_config(overrides: Dict[str, Any] = None) -> Config:
    """
    Load configuration from environment variables and optional overrides.

    Override values take precedence over environment variables when present.

    Args:
        overrides: Optional mapping of Config field names to values

    Returns:
        Config: Configuration object with all dynoscaler settings

    Raises:
        ValueError: If a value cannot be parsed
    """
    overrides = overrides or {}

    # RabbitMQ configuration
    rabbitmq_host = overrides.get('rabbitmq_host') or os.environ.get('RABBITMQ_HOST')
    rabbitmq_port = overrides.get('rabbitmq_port') or os.environ.get('RABBITMQ_PORT')
    rabbitmq_port = int(rabbitmq_port) if rabbitmq_port else None
    rabbitmq_username = overrides.get('rabbitmq_username') or os.environ.get('RABBITMQ_USERNAME', 'guest')
    rabbitmq_password = overrides.get('rabbitmq_password') or os.environ.get('RABBITMQ_PASSWORD', 'guest')
    rabbitmq_vhost = overrides.get('rabbitmq_vhost') or os.environ.get('RABBITMQ_VHOST')
    use_ssl = overrides.get('rabbitmq_use_ssl')
    if use_ssl is None:
        use_ssl = os.environ.get('RABBITMQ_USE_SSL', 'True')
    rabbitmq_use_ssl = _to_bool(use_ssl)

    # Heroku configuration
    heroku_api_key = overrides.get('heroku_api_key') or os.environ.get('HEROKU_API_KEY')
    heroku_app = overrides.get('heroku_app') or os.environ.get('HEROKU_APP')

    # Scaling configuration
    policies = parse_policies(_load_raw_policies(overrides))
    check_interval = float(overrides.get('check_interval') or os.environ.get('CHECK_INTERVAL', '10'))
    request_timeout = float(overrides.get('request_timeout') or os.environ.get('REQUEST_TIMEOUT', '10'))

    if check_interval <= 0:
        raise ValueError(f"CHECK_INTERVAL must be positive, got {check_interval}")
    if request_timeout <= 0:
        raise ValueError(f"REQUEST_TIMEOUT must be positive, got {request_timeout}")

    return Config(
        rabbitmq_host=rabbitmq_host,
        rabbitmq_port=rabbitmq_port,
        rabbitmq_username=rabbitmq_username,
        rabbitmq_password=rabbitmq_password,
        rabbitmq_vhost=rabbitmq_vhost,
        rabbitmq_use_ssl=rabbitmq_use_ssl,
        heroku_api_key=heroku_api_key,
        heroku_app=heroku_app,
        policies=policies,
        check_interval=check_interval,
        request_timeout=request_timeout
    )


def validate_config(config: Config) -> List[str]:
    """Return a list of problems that prevent the dynoscaler from starting."""
    problems = []
    if not config.rabbitmq_host:
        problems.append("RABBITMQ_HOST must be configured")
    if not config.heroku_api_key:
        problems.append("HEROKU_API_KEY must be configured")
    if not config.heroku_app:
        problems.append("HEROKU_APP must be configured")
    if not config.policies:
        problems.append("At least one scaling policy must be configured")
    return problems
