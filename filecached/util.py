import dataclasses
from io import BytesIO
import json
from typing import Any, Type, Union

from .model import Response


def is_falsy(value: Union[bytes, str, None]) -> bool:
    """
    Whether a key field counts as empty.

    Besides the empty value, a lone zero is treated as empty. Keys derived by
    earlier releases depend on this, so it must not change.
    """
    return value in (None, '', '0', b'', b'0')


def read_body(response: Response) -> bytes:
    """
    Read the complete body of `response` and leave it replayable from the start.

    Streams that cannot be rewound are replaced by an in-memory copy.
    """
    body = response.body
    if body is None:
        return b''
    if body.seekable():
        body.seek(0)
        data = body.read()
        body.seek(0)
        return data

    data = body.read()
    response.body = BytesIO(data)
    return data


def _from_dict(class_type: Type, value: Any) -> Any:
    if not (dataclasses.is_dataclass(class_type) and isinstance(value, dict)):
        return value
    kwargs = {f.name: _from_dict(f.type, value[f.name])
              for f in dataclasses.fields(class_type)
              if f.name in value}
    return class_type(**kwargs)


class DataclassJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        return super().default(o)


class DataclassJSONDecoder(json.JSONDecoder):
    """
    Decodes a JSON object into `class_type`, including nested dataclass fields.
    """

    def __init__(self, class_type: Type, **kwargs) -> None:
        super().__init__(**kwargs)
        self.__class_type = class_type

    def decode(self, s):
        result = super().decode(s)
        if not isinstance(result, dict):
            raise ValueError('Expected a JSON object for {}'.format(self.__class_type.__name__))
        return _from_dict(self.__class_type, result)
