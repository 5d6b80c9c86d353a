"""
URL routing for item, branch and ledger API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Items
    path('items/', views.ItemListCreateView.as_view(), name='item-list'),
    path('items/categories/', views.ItemCategoriesView.as_view(), name='item-categories'),
    path('items/reset-stock/', views.ResetStockView.as_view(), name='item-reset-stock'),
    path('items/<int:pk>/', views.ItemDetailView.as_view(), name='item-detail'),

    # Branches
    path('branches/', views.BranchListCreateView.as_view(), name='branch-list'),
    path('branches/cities/', views.BranchCitiesView.as_view(), name='branch-cities'),
    path('branches/<int:pk>/', views.BranchDetailView.as_view(), name='branch-detail'),
    path('branches/<int:pk>/status/', views.BranchStatusView.as_view(), name='branch-status'),

    # Ledger
    path('inventory/main/', views.CentralInventoryView.as_view(), name='inventory-main'),
    path('inventory/update-stock/', views.StockUpdateView.as_view(), name='inventory-update-stock'),
    path('inventory/alerts/', views.InventoryAlertsView.as_view(), name='inventory-alerts'),
    path('inventory/summary/', views.InventorySummaryView.as_view(), name='inventory-summary'),
    path('inventory/branch/<str:branch_ref>/', views.BranchInventoryView.as_view(), name='branch-inventory'),
]
