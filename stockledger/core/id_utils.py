import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_reference_code(prefix: str, length: int = 10) -> str:
    return f"{prefix}_{shortuuid.ShortUUID().random(length=length)}"
