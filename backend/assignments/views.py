import functools
import logging

from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from dispatch.exceptions import (
    AttemptNotFound,
    Conflict,
    DispatchError,
    InvalidCoordinates,
    InvalidOrderState,
    OrderNotFound,
    RiderCapacityExceeded,
    RiderNotFound,
)
from orders.models import Order
from riders.models import Rider
from .serializers import (
    AnalyticsQuerySerializer,
    AttemptSerializer,
    CycleStatusSerializer,
    ManualAssignSerializer,
    ManualQueueItemSerializer,
    OfferResponseSerializer,
    OrderIngestSerializer,
    OrderSerializer,
    RiderLocationSerializer,
    RiderProfileSerializer,
    RiderSerializer,
    RiderStatusSerializer,
)
from .services import get_dispatch_service

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    ((OrderNotFound, RiderNotFound, AttemptNotFound), status.HTTP_404_NOT_FOUND),
    ((Conflict, RiderCapacityExceeded), status.HTTP_409_CONFLICT),
    ((InvalidOrderState, InvalidCoordinates), status.HTTP_400_BAD_REQUEST),
)


def error_response(exc: DispatchError) -> Response:
    for error_types, http_status in _ERROR_STATUS:
        if isinstance(exc, error_types):
            return Response({"error": str(exc)}, status=http_status)
    logger.error(f"Unmapped dispatch error: {exc!r}")
    return Response({"error": str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def handles_dispatch_errors(view_method):
    """
    Turns dispatch-core exceptions into {"error": ...} responses.
    """
    @functools.wraps(view_method)
    def wrapper(*args, **kwargs):
        try:
            return view_method(*args, **kwargs)
        except DispatchError as exc:
            return error_response(exc)
    return wrapper


class OrderDispatchViewSet(viewsets.ViewSet):
    """
    Orders as seen by dispatch.
    - create: hand a READY order over to dispatch
    - dispatch: start (POST) or inspect (GET) the automatic offer cycle
    - manual-assign: operator override
    - cancel / pickup / on-the-way / deliver: order lifecycle events
    """

    def create(self, request):
        serializer = OrderIngestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        service = get_dispatch_service()
        order = Order.new(
            data["order_id"],
            data["restaurant_lat"],
            data["restaurant_lng"],
            delivery_lat=data.get("delivery_lat"),
            delivery_lng=data.get("delivery_lng"),
            zone_id=data.get("zone_id"),
        )
        service.order_store.add(order)
        stored = service.order_store.get_order(order.id)
        return Response(OrderSerializer(stored).data, status=status.HTTP_201_CREATED)

    @handles_dispatch_errors
    def retrieve(self, request, pk=None):
        order = get_dispatch_service().order_store.get_order(pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['get', 'post'], url_path='dispatch')
    @handles_dispatch_errors
    def start_dispatch(self, request, pk=None):
        """
        POST starts a cycle (or returns the running one). 202 while offering, 200 once terminal.
        """
        service = get_dispatch_service()
        if request.method == 'GET':
            cycle = service.dispatch_status(pk)
            if cycle is None:
                return Response({"error": f"No dispatch cycle for order {pk}"}, status=status.HTTP_404_NOT_FOUND)
            return Response(CycleStatusSerializer(cycle).data)

        cycle = service.dispatch(pk)
        http_status = status.HTTP_202_ACCEPTED if cycle.is_active else status.HTTP_200_OK
        return Response(CycleStatusSerializer(cycle).data, status=http_status)

    @action(detail=True, methods=['post'], url_path='manual-assign')
    @handles_dispatch_errors
    def manual_assign(self, request, pk=None):
        serializer = ManualAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = get_dispatch_service().manual_assign(
            pk,
            serializer.validated_data["rider_id"],
            serializer.validated_data["operator_id"],
        )
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'])
    @handles_dispatch_errors
    def cancel(self, request, pk=None):
        order = get_dispatch_service().cancel_order(pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'])
    @handles_dispatch_errors
    def pickup(self, request, pk=None):
        order = get_dispatch_service().mark_picked_up(pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'], url_path='on-the-way')
    @handles_dispatch_errors
    def on_the_way(self, request, pk=None):
        order = get_dispatch_service().mark_on_the_way(pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'])
    @handles_dispatch_errors
    def deliver(self, request, pk=None):
        order = get_dispatch_service().mark_delivered(pk)
        return Response(OrderSerializer(order).data)


class OfferViewSet(viewsets.ViewSet):

    @action(detail=True, methods=['post'])
    @handles_dispatch_errors
    def respond(self, request, pk=None):
        """
        Rider app answer to an offer. 409 if the offer is no longer pending.
        """
        serializer = OfferResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        attempt = get_dispatch_service().respond_to_offer(
            pk,
            serializer.validated_data["rider_id"],
            serializer.validated_data["response"],
        )
        return Response(AttemptSerializer(attempt).data)


class RiderViewSet(viewsets.ViewSet):
    """
    Rider profiles and the rider app's self-reported updates.
    """

    def create(self, request):
        serializer = RiderProfileSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        rider = Rider.new(
            data["rider_id"],
            data["latitude"],
            data["longitude"],
            is_online=data["is_online"],
            active_order_count=data["active_order_count"],
            max_concurrent_orders=data["max_concurrent_orders"],
            acceptance_rate=data.get("acceptance_rate"),
            completion_rate=data.get("completion_rate"),
            average_rating=data.get("average_rating"),
            zones=data["zones"],
        )
        get_dispatch_service().rider_store.upsert(rider)
        return Response(RiderSerializer(rider).data, status=status.HTTP_201_CREATED)

    @handles_dispatch_errors
    def retrieve(self, request, pk=None):
        rider = get_dispatch_service().rider_store.get_rider(pk)
        return Response(RiderSerializer(rider).data)

    @action(detail=True, methods=['post'], url_path='location')
    @handles_dispatch_errors
    def update_location(self, request, pk=None):
        serializer = RiderLocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        rider = get_dispatch_service().update_rider_location(
            pk,
            serializer.validated_data["latitude"],
            serializer.validated_data["longitude"],
        )
        return Response(RiderSerializer(rider).data)

    @action(detail=True, methods=['post'], url_path='status')
    @handles_dispatch_errors
    def set_status(self, request, pk=None):
        serializer = RiderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        rider = get_dispatch_service().set_rider_online(pk, serializer.validated_data["is_online"])
        return Response(RiderSerializer(rider).data)


class ManualQueueView(APIView):

    def get(self, request):
        items = get_dispatch_service().manual_queue()
        return Response(ManualQueueItemSerializer(items, many=True).data)


class AnalyticsView(APIView):

    def get(self, request):
        query = AnalyticsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        report = get_dispatch_service().assignment_analytics(query.validated_data["window"])
        return Response(report.to_dict())
