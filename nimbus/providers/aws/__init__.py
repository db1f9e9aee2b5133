from .provider import AWSProvider as AWSProvider
