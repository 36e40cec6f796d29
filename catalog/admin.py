from django.contrib import admin
from .models import Product, ProductSize


class ProductSizeInline(admin.TabularInline):
    model = ProductSize
    extra = 0
    fields = ('size', 'stock')


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'price', 'original_price', 'is_active', 'created_at')
    list_filter = ('category', 'is_active')
    search_fields = ('name', 'slug')
    ordering = ('-created_at',)
    inlines = [ProductSizeInline]

    fieldsets = (
        ('Product Details', {
            'fields': ('name', 'slug', 'category', 'image_url', 'sizes', 'description')
        }),
        ('Pricing', {
            'fields': ('price', 'original_price', 'is_active')
        }),
        ('Date Information', {
            'fields': ('created_at',),
        }),
    )

    readonly_fields = ('created_at',)
