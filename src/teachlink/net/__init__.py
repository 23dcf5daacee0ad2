from teachlink.net.gateway import NetworkGateway

__all__ = ["NetworkGateway"]
