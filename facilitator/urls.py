from django.urls import path

from facilitator.views import (
    DiscoveryListAliasView,
    DiscoveryResourcesView,
    X402CapabilitiesView,
    X402SettleView,
    X402SupportedView,
    X402VerifyView,
)

app_name = 'facilitator'

urlpatterns = [
    path('', X402CapabilitiesView.as_view(), name='capabilities'),
    path('supported', X402SupportedView.as_view(), name='supported'),
    path('verify', X402VerifyView.as_view(), name='verify'),
    path('settle', X402SettleView.as_view(), name='settle'),
    path('discovery/resources', DiscoveryResourcesView.as_view(), name='discovery-resources'),
    path('list', DiscoveryListAliasView.as_view(), name='list'),
]
