from typing import Dict, List, Union

ASSET_ERC20_PATH: str = "/asset/erc20/{chain_id}/{symbol}"
ASSET_PRICE_PATH: str = "/asset/erc20/price/{chain_id}/{address}"
API_KEY_HEADER: str = "X-Api-Key"

HTTP_STATUS_NOT_FOUND: int = 404
HTTP_STATUS_TOO_MANY_REQUESTS: int = 429

JSONScalar = Union[str, int, float, bool, None]
JSON = Union[JSONScalar, Dict[str, "JSON"], List["JSON"]]
