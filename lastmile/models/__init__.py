from lastmile.models.waybill import WaybillNumber

__all__ = ["WaybillNumber"]
