"""
Flash Express Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView
from rest_framework.decorators import api_view
from rest_framework.response import Response


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "Flash Express Operations"
admin.site.site_title = "Flash Express Admin"
admin.site.index_title = "Shipments & Courier Ledger"


@api_view(['GET'])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'Flash Express API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'users': '/api/users/',
            'shipments': '/api/shipments/',
            'couriers': '/api/couriers/<id>/stats/',
            'payouts': '/api/payouts/',
            'courier_transactions': '/api/courier-transactions/',
            'financials': {
                'admin': '/api/financials/admin/',
                'clients': '/api/financials/clients/',
            },
            'schema': '/api/schema/',
        }
    })


urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # API Root & schema
    path('api/', api_root, name='api-root'),
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),

    # App URLs
    path('api/', include('core.urls')),
    path('api/', include('logistics.urls')),
    path('api/', include('finance.urls')),
]
