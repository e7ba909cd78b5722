class GatewayError(Exception): pass


class GatewayResponseError(GatewayError): pass
