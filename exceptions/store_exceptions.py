class StateLayerError(Exception):
    pass


class BackendUnavailable(StateLayerError):
    pass


class PaymentNotFound(StateLayerError):
    pass


class MalformedPayload(StateLayerError):
    pass


class RedeliveryFailure(StateLayerError):
    pass


class RetryExhausted(StateLayerError):
    pass
