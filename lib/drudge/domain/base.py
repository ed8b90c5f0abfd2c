import abc


class Serializable(metaclass=abc.ABCMeta):
    """Something that can be encoded & decoded to/from a dict.
    """

    @abc.abstractmethod
    def encode(self) -> dict:
        """Deflate obj to dict

        :return: dict

        """
        pass

    @classmethod
    @abc.abstractmethod
    def decode(cls, data: dict):
        """Hydrate class instance from data

        :param data:
        :return: cls instance

        """
        pass
