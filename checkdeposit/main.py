from checkdeposit.api.main import app  # noqa: F401
