"""Exception types raised by the data loader and the loss layer."""


class ConfigError(ValueError):
    """Invalid layer configuration or unusable manifest."""


class ShapeError(ValueError):
    """Tensor or image shapes that cannot be used together."""


class DecodeError(RuntimeError):
    """An image or label image could not be read or decoded."""
